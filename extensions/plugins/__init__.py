"""Source engine plugins"""
