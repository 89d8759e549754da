"""
Job lifecycle: state machine, job actions and GPS checks.
"""
