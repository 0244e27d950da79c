"""Offline data loaders"""
