"""RescueLink services"""
