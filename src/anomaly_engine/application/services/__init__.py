"""Application Services"""
