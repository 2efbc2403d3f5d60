"""
Command-line tools for sqlkite projects.
"""
