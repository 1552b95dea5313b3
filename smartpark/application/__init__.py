"""Application layer: the parking ledger service and its DTOs"""
