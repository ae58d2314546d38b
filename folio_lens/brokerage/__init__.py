"""
Brokerage integration: the position source interface, the Trading212
client and position/account normalization.
"""
