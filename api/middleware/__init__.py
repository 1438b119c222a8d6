# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

Request validation and error rendering for the relief integrity API.
"""
