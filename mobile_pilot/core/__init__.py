"""
Execution engine: plan runner, handlers, resolvers and persistent stores
"""
