"""Integration adapters for the HPE GreenLake and Compute Ops Management APIs.

Keep these modules small and testable:
- No CLI/argparse concerns
- No subscription / external-service business rules
- Pure IO + error decoding
"""
