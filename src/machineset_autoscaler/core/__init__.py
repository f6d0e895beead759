"""
Core autoscaler modules
"""
