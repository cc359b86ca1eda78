"""Scheduling domain - production tasks and customer appointments on one shared calendar"""
