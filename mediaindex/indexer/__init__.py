"""Build orchestration: context, builder and single-flight runner."""
