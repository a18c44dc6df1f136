"""Provisioners for the services of the fixed topology."""
