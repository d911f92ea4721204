"""
Tests Package

This package contains all test files for the bingo session engine:
- Card generation and win evaluation
- Session state machine, prizes and reconnection
- Auto caller and session registry
- Protocol dispatcher scenarios
- Database gateway operations

Run tests with: pytest tests/
"""
