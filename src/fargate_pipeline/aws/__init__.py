"""
AWS side of the deployer.

Contains the cached boto3 client manager, one resource handler per resource
kind and the AwsProvider that dispatches reconciliation operations to them.
"""
