import math
import os

import yaml

class ConfigManager:
    """
    Manages loading and accessing configuration settings from a YAML file.
    """
    def __init__(self, config_path="config/config.yaml"):
        """
        Initializes the ConfigManager.

        Args:
            config_path (str, optional): The path to the configuration file,
                                         relative to the project root
                                         (the directory containing 'handpose/').
        """
        base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        self.config_path = os.path.join(base_dir, config_path)
        self.config = None
        self.load_config()
        if self.config: # Only validate if loading was successful
            self.validate_config()

    def load_config(self):
        """
        Loads the configuration from the YAML file.

        Handles FileNotFoundError and YAMLError, printing informative messages.
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f)
            if self.config is None: # Empty file
                print(f"Warning: Configuration file '{self.config_path}' is empty or malformed.")
                self.config = {}
        except FileNotFoundError:
            print(f"Error: Configuration file not found at '{self.config_path}'.")
            self.config = {}
        except yaml.YAMLError as e:
            print(f"Error: Could not parse configuration file '{self.config_path}'.")
            print(f"YAML Error: {e}")
            self.config = {}

    def get_setting(self, key, default=None):
        """
        Retrieves a configuration setting by its key.

        Args:
            key (str): The key of the setting to retrieve.
                       Supports dot notation for nested keys (e.g., "pipeline.mesh_input_width").
            default (any, optional): The default value to return if the key is not found.

        Returns:
            any: The value of the setting, or the default value if not found.
        """
        if not self.config:
            return default

        value = self.config
        try:
            for k in key.split('.'):
                if isinstance(value, dict):
                    value = value[k]
                else: # Path is invalid if an intermediate value is not a dict
                    return default
            return value
        except (KeyError, TypeError):
            return default

    def validate_config(self):
        """
        Performs basic validation for the pipeline settings.
        Prints warnings for invalid settings.
        """
        if not self.config:
            print("Warning: No configuration loaded, skipping validation.")
            return

        for key in ('pipeline.mesh_input_width', 'pipeline.mesh_input_height'):
            value = self.get_setting(key)
            if value is not None and not (isinstance(value, int) and not isinstance(value, bool) and value > 0):
                print(f"Warning: '{key}' should be a positive integer. Found: {value}")

        max_checks = self.get_setting('pipeline.max_continuous_checks')
        if max_checks is not None:
            is_positive_int = isinstance(max_checks, int) and not isinstance(max_checks, bool) and max_checks > 0
            is_infinite = isinstance(max_checks, float) and math.isinf(max_checks) and max_checks > 0
            if not (is_positive_int or is_infinite):
                print(f"Warning: 'pipeline.max_continuous_checks' should be a positive integer or .inf. Found: {max_checks}")

        for key in ('pipeline.detection_confidence',
                    'palm_detector.min_detection_confidence',
                    'landmark_model.min_detection_confidence'):
            value = self.get_setting(key)
            if value is not None and not (isinstance(value, (int, float)) and not isinstance(value, bool)
                                          and 0.0 <= value <= 1.0):
                print(f"Warning: '{key}' should be a number between 0 and 1. Found: {value}")

        for key in ('pipeline.verbose', 'tracker.legacy_iou', 'palm_detector.static_image_mode'):
            value = self.get_setting(key)
            if value is not None and not isinstance(value, bool):
                print(f"Warning: '{key}' should be true or false. Found: {value}")
