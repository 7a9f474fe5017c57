"""
Learned-flow components: graph models, plan inference and alignment
"""
