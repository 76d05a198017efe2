"""Bucket metadata parsing for tree-structured storage."""