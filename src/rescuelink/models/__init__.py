"""Data models for RescueLink"""
