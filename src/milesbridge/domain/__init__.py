"""Order lifecycle domain: state machine, reconciliation and transfer orchestration."""
