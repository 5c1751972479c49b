"""
Core business logic for recording, AI analysis and emergency dispatch.

This module is framework-agnostic - it doesn't import FastAPI, Socket.IO
or any cloud SDK. Services receive their clients through constructor
arguments, so the logic can be tested with mocks.
"""
