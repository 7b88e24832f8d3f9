"""Participant and event operations on top of ApiClient"""
