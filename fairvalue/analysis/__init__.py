'''Accuracy analysis of stored valuations.'''
