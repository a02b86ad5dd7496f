"""内置补全提供者 / Built-in completion providers."""
