"""Configuration for the SDF converter"""
