"""Attendance CRUD Package"""
