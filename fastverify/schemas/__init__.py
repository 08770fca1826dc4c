"""
FastVerify Booth - Pydantic Schemas

Request/response validation for the local booth API and the remote
authority wire format.
"""
