"""Optional engine adapters"""
