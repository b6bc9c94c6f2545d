project = 'Causal MR Toolkit'
copyright = '2025, Lior Shachaf'
author = 'Lior Shachaf'
release = '0.1.0'

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
]

autodoc_mock_imports = ['Bio', 'sklearn', 'statsmodels']

templates_path = ['_templates']
exclude_patterns = ['_build']

html_theme = 'sphinx_rtd_theme'
html_static_path = []
