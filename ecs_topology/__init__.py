"""Declare a load-balanced ECS service and ship application logs to CloudWatch."""

__version__ = "0.1.0"
