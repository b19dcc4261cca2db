"""
Delivery pipeline components.

Run records, source fetching, image build and push, artifact storage,
orchestration of the stages and per-branch trigger dispatch.
"""
