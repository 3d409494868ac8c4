"""Points ledger"""
