"""
External services: device driver, vision detector, language model
"""
