"""Infrastructure Layer Package"""
