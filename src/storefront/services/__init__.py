"""
Business services for the affiliate program and marketplace ingestion.
"""
