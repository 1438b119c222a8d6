# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the relief integrity engine.

Pure business rules with no side effects: identifier derivation, input
validation, the cooldown rule and the typed business errors.
"""
