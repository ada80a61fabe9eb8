"""Test suite for the Alchemist Graph System.

This package contains comprehensive tests for the graph-based workflow system,
organized into the following structure:

1. Base Graph Tests (test_base.py)
   - Graph initialization
   - Node registration
   - Basic workflow execution
   - Error handling
   - Event emission

2. Node Tests (nodes/)
   - Base node functionality
   - Action node tests
   - Agent node tests
   - Context node tests
   - Terminal node tests

3. State Management (test_state.py)
   - State initialization
   - Data access patterns
   - State validation
   - Checkpointing

4. Configuration (test_config.py)
   - Graph configuration
   - Node configuration
   - Validation rules

5. Integration Tests (integration/)
   - Full workflow tests
   - Tool integration
   - Error propagation
   - Performance benchmarks
"""
