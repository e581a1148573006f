"""dohguard package"""
