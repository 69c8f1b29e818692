"""Domain Services"""
