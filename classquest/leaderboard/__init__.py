"""Leaderboard: experience ranking and statistics"""
