"""Pytest config so that the 'config' and 'patterner' packages import when running tests from the repo root."""
import os
import sys

ROOT_DIR = os.path.dirname(__file__)
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)
