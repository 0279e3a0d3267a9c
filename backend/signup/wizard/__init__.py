"""
Wizard package — session state, step layouts and the state machine.

The state machine lives in ``signup.wizard.machine``.
"""
