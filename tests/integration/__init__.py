"""
Integration tests against a live Salesforce org.

These tests run the streaming scenarios end to end:
- PushTopic notifications for inserted records
- Generic streaming channel push and replay (-2, -1 and a specific replay id)
- Change Data Capture on Account with soft timeouts

They are skipped unless org credentials are configured.
"""
