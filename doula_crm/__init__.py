"""Doula CRM backend"""
