"""
Monitoring Module

Contains the change-detection pipeline:
- Browser-driven catalog search (scraper + page parsing)
- Reliability checks on observed counts
- Scheduled monitoring cycles and change notifications
"""
