"""boardkit: cross-build kernel, modules, DTB and initramfs for ARM boards.

Core design goals:
- Stage-driven and resumable
- Idempotent stages keyed on well-known paths
- Explicit directory context, no ambient cwd
- Minimal busybox initramfs with a rescue-shell fallback
- Centralized logging
"""

__all__ = []
