"""Domain services: ZIP routing, plan cache, pricing API client, analytics"""
