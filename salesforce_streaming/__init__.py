"""
Salesforce Streaming Integration Suite

Exercises the Salesforce streaming API (PushTopic, generic streaming channels
and Change Data Capture) against a live org: provisions fixtures, subscribes at
a replay cursor, triggers events and checks what gets delivered.
"""

__version__ = "1.0.0"
