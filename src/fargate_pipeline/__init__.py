"""
Deployment orchestration for a containerized service on ECS Fargate.

Declares the infrastructure as a resource graph, reconciles it against the
last applied state and runs the fetch, build, push and deploy pipeline.
"""
__version__ = "0.1.0"
