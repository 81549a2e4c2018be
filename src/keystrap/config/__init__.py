# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from .loader import load_settings
from .models import KeystrapSettings

__all__ = ["KeystrapSettings", "load_settings"]
