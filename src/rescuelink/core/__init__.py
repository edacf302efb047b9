"""Core infrastructure for RescueLink"""
