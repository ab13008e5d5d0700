"""Payment domain: checkout, payment intents and webhook reconciliation"""
