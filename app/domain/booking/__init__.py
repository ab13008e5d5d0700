"""Appointment booking domain: slot grid, conflict guard, appointments"""
