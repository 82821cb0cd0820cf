"""Command-line interface for Avatar Studio"""
