"""
Services: Telegram messaging and the long-running monitoring daemon.
"""
